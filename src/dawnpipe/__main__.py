from dawnpipe.cli import main

raise SystemExit(main())
