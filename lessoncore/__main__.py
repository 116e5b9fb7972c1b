from lessoncore.cli.main import main

main()
