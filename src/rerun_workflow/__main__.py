from rerun_workflow.cli import main


if __name__ == "__main__":
    main()
