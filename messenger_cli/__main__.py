from messenger_cli.main import main

main()
