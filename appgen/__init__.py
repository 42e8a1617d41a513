"""appgen -- generate build and deployment configuration from source.

Inspects a local directory or a remote git repository, picks a build
strategy (a Dockerfile build or a builder-image build), resolves concrete
images through an ordered resolver chain and assembles the platform objects
needed to build and run the code.

Quick usage::

    from appgen import GenerateRequest, generate_app, image_resolver_from_config
    from appgen.config import Config

    resolver = image_resolver_from_config(Config.from_env())
    objects = await generate_app(GenerateRequest(source_dir="."), resolver)
"""

from appgen.generate import GenerateRequest, generate_app, image_resolver_from_config
from appgen.resolvers import ImageResolverChain, Resolver, WeightedResolver

__all__ = [
    "GenerateRequest",
    "ImageResolverChain",
    "Resolver",
    "WeightedResolver",
    "generate_app",
    "image_resolver_from_config",
]
