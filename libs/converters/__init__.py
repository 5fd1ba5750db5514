"""Message converters for type-preserving JSON.

Primary components:
- ``media_type``: ``MediaType`` parsing and wildcard-aware matching.
- ``http``: header and message wrappers handed to converters.
- ``base``: abstract converter contract and conversion errors.
- ``codecs``: ``Codec`` interface with jsonpickle and msgspec backends.
- ``typed_json``: ``TypedJsonMessageConverter``, the negotiating adapter.
- ``factory``: build a converter from ``ConverterConfig``.
- ``web``: FastAPI dependencies, responses, and error handlers.

Guidance:
- Prefer constructing via ``factory.create_converter`` so applications
  remain decoupled from media type and codec choices.
"""
