# video_labeler/widgets/__init__.py
