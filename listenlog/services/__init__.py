"""Domain services backing the listenlog API and workers."""
