"""
Recognition Client Base
Image -> number capability used by the ingestion pipeline
"""


class RecognitionClient:
    """
    Any provider that can take a staged image and read a meter value from it.

    upload() hands the staged file to the provider and returns a reference
    (a URI the provider can resolve later). extract_number() reads the
    numeric value from that reference and raises when it cannot.
    """

    def upload(self, image_path: str, mime_type: str, display_name: str) -> str:
        raise NotImplementedError

    def extract_number(self, image_ref: str, mime_type: str) -> float:
        raise NotImplementedError
