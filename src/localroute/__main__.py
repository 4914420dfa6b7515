from localroute.poller import main

main()
