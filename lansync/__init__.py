"""LAN file sharing service with chunked uploads and streaming archive downloads."""
