from agenttop.cli import main

main()
