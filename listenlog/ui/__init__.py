"""Server-rendered pages for the listenlog web client."""
