from mcp_server_roam_import import main

main()
