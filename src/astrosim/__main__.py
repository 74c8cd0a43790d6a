from astrosim.cli import main

raise SystemExit(main())
