"""Content type to file extension mapping for blob downloads."""

DEFAULT_EXTENSION = 'bin'

CONTENT_TYPE_EXTENSIONS = {
    # Images
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/svg+xml': 'svg',
    'image/bmp': 'bmp',
    'image/tiff': 'tiff',
    'image/avif': 'avif',
    'image/heic': 'heic',
    'image/heif': 'heif',

    # Videos
    'video/mp4': 'mp4',
    'video/mpeg': 'mpeg',
    'video/quicktime': 'mov',
    'video/webm': 'webm',
    'video/avi': 'avi',
    'video/x-msvideo': 'avi',
    'video/3gpp': '3gp',
    'video/x-flv': 'flv',

    # Audio
    'audio/mpeg': 'mp3',
    'audio/mp3': 'mp3',
    'audio/wav': 'wav',
    'audio/x-wav': 'wav',
    'audio/ogg': 'ogg',
    'audio/aac': 'aac',
    'audio/flac': 'flac',
    'audio/webm': 'weba',

    # Text/Subtitles
    'text/vtt': 'vtt',
    'text/plain': 'txt',
    'text/html': 'html',
    'text/css': 'css',
    'text/javascript': 'js',
    'text/xml': 'xml',
    'text/csv': 'csv',

    # Documents
    'application/pdf': 'pdf',
    'application/msword': 'doc',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document': 'docx',
    'application/vnd.ms-excel': 'xls',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': 'xlsx',
    'application/vnd.ms-powerpoint': 'ppt',
    'application/vnd.openxmlformats-officedocument.presentationml.presentation': 'pptx',

    # Archives
    'application/zip': 'zip',
    'application/x-zip-compressed': 'zip',
    'application/x-rar-compressed': 'rar',
    'application/x-tar': 'tar',
    'application/gzip': 'gz',
    'application/x-7z-compressed': '7z',

    # Data
    'application/json': 'json',
    'application/xml': 'xml',
    'application/x-yaml': 'yaml',
    'text/yaml': 'yaml',
    'application/vnd.ipld.car': 'car',

    'application/octet-stream': 'bin',
}


def extension_for(content_type: str | None) -> str:
    """Return the file extension (without dot) for a Content-Type header value.

    Parameters such as ``; charset=utf-8`` are ignored; unknown or missing types map to 'bin'.
    """
    if not content_type:
        return DEFAULT_EXTENSION
    media_type = content_type.split(';')[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(media_type, DEFAULT_EXTENSION)


def blob_filename(cid: str, content_type: str | None = None) -> str:
    return f"{cid}.{extension_for(content_type)}"
