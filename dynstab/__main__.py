from dynstab.run import main

main()
