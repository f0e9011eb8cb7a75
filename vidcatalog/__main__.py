from vidcatalog.cli import main

main()
