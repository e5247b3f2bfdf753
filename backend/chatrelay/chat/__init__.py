"""Room session coordination: presence, membership, typing and history paging."""
