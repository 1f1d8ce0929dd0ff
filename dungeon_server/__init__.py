# dungeon_server - authoritative server for the two-player dungeon puzzle game
