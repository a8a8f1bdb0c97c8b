"""Live order feed: snapshot + event reconciliation, notices and the websocket consumer."""
