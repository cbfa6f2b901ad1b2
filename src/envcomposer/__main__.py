from .cli_main import main

raise SystemExit(main())
