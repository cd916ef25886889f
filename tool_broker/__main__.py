from tool_broker.cli.main import main

if __name__ == "__main__":
    main()
