"""Grid providers, the grid byte cache and grid format decoders.

- base: ``GridProvider``/``GridHandle`` interfaces and provider exceptions
- cache: bounded LRU + TTL byte cache (``CachePolicy``)
- local: files under configured directories
- network: HTTP CDN access with range reads
- chained: local first, then network
- grids: GTX and NTv2 decoding and interpolation
"""
