from leads_ranker.cli import main

main()
