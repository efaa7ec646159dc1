from rpa_checks.main import main

raise SystemExit(main())
