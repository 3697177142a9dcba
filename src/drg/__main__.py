from drg.cli.main import main

raise SystemExit(main())
