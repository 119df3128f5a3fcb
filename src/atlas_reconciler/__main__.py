from atlas_reconciler.cli import main

raise SystemExit(main())
