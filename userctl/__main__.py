from userctl.cli import main

main()
