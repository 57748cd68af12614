"""
Geospatial primitives: bounding boxes, Web Mercator helpers and the hierarchical
point-cluster index.
"""
