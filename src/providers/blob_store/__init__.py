"""Raw transcript storage.

FilesystemBlobStore writes each transcript's text under a root directory
(data/blobs by default); documents reference it by key.
"""
