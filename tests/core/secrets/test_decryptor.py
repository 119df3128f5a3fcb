# tests/core/secrets/test_decryptor.py
"""
Testes do SecretDecryptor (all-or-nothing por bundle).

Os testes asseguram que:
- toda SecretRef de todo manifest é substituída pelo texto plano
- `keyId` ausente na referência cai no `decryptionKeyId` do bundle
- qualquer falha falha a chamada inteira, listando recurso e caminho
- o ResourceSet de entrada nunca é mutado

Invariantes:
    - Texto plano nunca aparece em mensagens ou details de erro
"""

import pytest

from tests._builders import configmap

try:
    from atlas_reconciler.core.bundle.types import ResourceSet
    from atlas_reconciler.core.exceptions import DecryptionError
    from atlas_reconciler.core.secrets.decryptor import (
        DecryptedResourceSet,
        SecretDecryptor,
        find_secret_refs,
        has_secret_refs,
    )
    from atlas_reconciler.core.secrets.keyring import Keyring
except Exception as e:  # noqa: BLE001
    ResourceSet = None
    DecryptionError = None
    DecryptedResourceSet = None
    SecretDecryptor = None
    find_secret_refs = None
    has_secret_refs = None
    Keyring = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing secrets modules. Implement:\n"
            "- src/atlas_reconciler/core/secrets/decryptor.py (SecretDecryptor)\n"
            "- src/atlas_reconciler/core/secrets/keyring.py (Keyring)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _secret_manifest(name, **data):
    m = configmap(name)
    m["kind"] = "Secret"
    m["data"] = data
    return m


def test_decrypts_nested_references(keyring, secret_node):
    """
    Referências em dicts e listas aninhados são resolvidas; recursos sem
    referência passam intactos.
    """
    _require_imports()
    db = _secret_manifest("db", password=secret_node("hunter2"))
    db["spec"] = {"users": [{"name": "app", "token": secret_node("tok-123")}]}
    plain = configmap("plain", mode="x")
    resources = ResourceSet.from_manifests([db, plain])

    out = SecretDecryptor(keyring).decrypt(resources)

    assert isinstance(out, DecryptedResourceSet)
    assert out[0].manifest["data"]["password"] == "hunter2"
    assert out[0].manifest["spec"]["users"][0]["token"] == "tok-123"
    assert out[1] is resources[1]
    assert out.plaintexts == frozenset({"hunter2", "tok-123"})
    assert out[0].checksum != resources[0].checksum


def test_input_is_not_mutated(keyring, secret_node):
    _require_imports()
    resources = ResourceSet.from_manifests([_secret_manifest("db", password=secret_node("hunter2"))])
    before = resources[0].manifest["data"]["password"]
    SecretDecryptor(keyring).decrypt(resources)
    assert resources[0].manifest["data"]["password"] == before
    assert has_secret_refs(resources[0].manifest)


def test_bundle_default_key_id(keyring, secret_node):
    _require_imports()
    resources = ResourceSet.from_manifests([_secret_manifest("db", password=secret_node("hunter2", key_id=None))])
    out = SecretDecryptor(keyring).decrypt(resources, key_id="prod")
    assert out[0].manifest["data"]["password"] == "hunter2"


def test_all_or_nothing_collects_every_failure(keyring, secret_node):
    """
    Uma referência com chave desconhecida, uma sem chave e um blob
    corrompido: a chamada falha inteira e cada falha é listada com
    recurso e caminho, sem texto plano.
    """
    _require_imports()
    good = _secret_manifest("good", password=secret_node("visible-if-leaked"))
    unknown = _secret_manifest("unknown", password=secret_node("x", key_id="staging"))
    nokey = _secret_manifest("nokey", password=secret_node("y", key_id=None))
    corrupt = _secret_manifest("corrupt", password={"$secret": {"encryptedBlob": "not-a-token", "keyId": "prod"}})
    resources = ResourceSet.from_manifests([good, unknown, nokey, corrupt])

    with pytest.raises(DecryptionError) as info:
        SecretDecryptor(keyring).decrypt(resources)

    failures = info.value.details["failures"]
    assert [f["resource"].split("/")[-1] for f in failures] == ["unknown", "nokey", "corrupt"]
    assert all(f["path"] == "data.password" for f in failures)
    assert "visible-if-leaked" not in repr(info.value)
    assert info.value.message == "3 secret reference(s) could not be decrypted"


def test_wrong_key_material_fails(secret_node):
    _require_imports()
    other = Keyring({"prod": Keyring.generate_key()})
    resources = ResourceSet.from_manifests([_secret_manifest("db", password=secret_node("hunter2"))])
    with pytest.raises(DecryptionError):
        SecretDecryptor(other).decrypt(resources)


def test_malformed_reference_fails(keyring):
    _require_imports()
    resources = ResourceSet.from_manifests([_secret_manifest("db", password={"$secret": {"keyId": "prod"}})])
    with pytest.raises(DecryptionError) as info:
        SecretDecryptor(keyring).decrypt(resources)
    assert "encryptedBlob" in info.value.details["failures"][0]["reason"]


def test_find_secret_refs_paths(secret_node):
    _require_imports()
    manifest = {"a": {"b": [1, {"c": secret_node("v")}]}, "d": secret_node("w")}
    assert [p for p, _ in find_secret_refs(manifest)] == ["a.b[1].c", "d"]
    assert not has_secret_refs({"a": {"$secret": {}, "other": 1}})


def test_keys_with_dots_and_brackets(keyring, secret_node):
    """
    Chaves como `tls.crt`, `.dockerconfigjson` e `a[0]` são chaves literais,
    não caminhos: o valor é decifrado no lugar e falhas apontam a chave.
    """
    _require_imports()
    tls = _secret_manifest("tls")
    tls["stringData"] = {
        "tls.crt": secret_node("cert-body"),
        ".dockerconfigjson": secret_node("{}"),
        "a[0]": secret_node("odd"),
    }
    resources = ResourceSet.from_manifests([tls])

    out = SecretDecryptor(keyring).decrypt(resources)

    assert out[0].manifest["stringData"] == {"tls.crt": "cert-body", ".dockerconfigjson": "{}", "a[0]": "odd"}

    broken = _secret_manifest("broken")
    broken["stringData"] = {"tls.key": secret_node("k", key_id="staging")}
    with pytest.raises(DecryptionError) as info:
        SecretDecryptor(keyring).decrypt(ResourceSet.from_manifests([broken]))
    assert info.value.details["failures"][0]["path"] == "stringData.tls.key"
