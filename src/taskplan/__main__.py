from taskplan.main import main

raise SystemExit(main())
