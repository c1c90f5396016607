"""Resolvers discovered by the registry discovery tests."""
