"""llamaup: per-architecture llama.cpp CUDA binaries, built once and pulled anywhere.

Pipeline:
  - Resolve the local GPU to a CUDA SM code (longest-match pattern table)
  - Build-or-skip: compile, package and hash one archive per SM
  - Publish archive + ``.sha256`` sidecar as a pair to a GitHub release
  - Pull: select the SM asset, verify the download, install per (version, SM)
"""

__version__ = "0.3.0"
__description__ = "Pre-built llama.cpp CUDA binaries keyed by GPU architecture"

__all__ = ["__version__"]
