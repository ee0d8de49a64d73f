from sillio.app import main

main()
