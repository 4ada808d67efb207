"""
filedrop: account and file upload API.

This package provides a FastAPI application over pluggable identity, record
and object storage backends (Firebase, SQL + S3, or in-memory), with a staged
write pipeline that reports partial failures across those stores.
"""
