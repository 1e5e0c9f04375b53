"""Tagged binary blobs, blobmsg containers, an AVL tree, key/value lists and JSON helpers."""

__version__ = "0.1.0"

__all__ = [
    "avl",
    "blob",
    "blobmsg",
    "blobmsg_json",
    "jshn",
    "kvlist",
]