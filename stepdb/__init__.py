"""
STEP document store.

Parses STEP exchange files into `#<id>=<definition>;` records, keeps them in
an ordered key-value store namespaced by document, and rebuilds documents
from a namespace prefix into a local file or an S3-compatible bucket. The
pipeline subpackage holds the parser, store, ingestor, exporter and the
worker/job plumbing around them.
"""
