from .feed import main

main()
