from alpn_probe.cli import main

main()
