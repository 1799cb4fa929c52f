from imagebed.upload.cli import main

main()
