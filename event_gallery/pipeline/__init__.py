"""
Event Image Ingestion Pipeline

Per file, bounded per request:
1. Probe - Read pixel dimensions from the header
2. Watermark - Size the overlay panel to the image
3. Transcode - Original (q90) and watermarked (q80) JPEG renditions
4. Upload - Both renditions to the content store

Then one local transaction commits the event and every image pair.
"""
