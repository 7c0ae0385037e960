import pathlib as pl

FileType = str | pl.Path
# Environment mapping passed to a node
EnvType = dict[str, str]
