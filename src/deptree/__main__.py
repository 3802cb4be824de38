from deptree.cli import main

raise SystemExit(main())
