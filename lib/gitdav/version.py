
version = b'0.1.0'
