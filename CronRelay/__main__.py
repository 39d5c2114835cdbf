from CronRelay.main import main

main()
