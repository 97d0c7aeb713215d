from stash.cli import main

main()
