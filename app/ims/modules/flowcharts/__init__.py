"""Process flowcharts, stored as opaque node/edge blobs for the editor."""
