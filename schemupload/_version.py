
__version__ = "0.1.0"
__banner__ = \
"""
# schemupload %s
# schematic file service
""" % __version__
