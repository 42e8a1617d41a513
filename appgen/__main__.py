from appgen.generate import main

main()
