from checkgate.cli import main

main()
