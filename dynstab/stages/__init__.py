"""
dynstab Stages: one runner per persisted key.

Each stage module provides:
    run(block, config, inputs, verbose)      -> (artifact, missing-entity messages)
    to_frames(artifact, block)               -> {'': main table, '<sidecar>': table}
    from_frames(frames, block, config, inputs) -> artifact

Stages:
    embedding        EmbeddingSelector (simplex)
    surrogates       SurrogateGenerator
    causal_network   CausalNetworkBuilder (CCM)
    coefficients     SMapFitter
    matrices         MatrixAssembler
    eigen / svd      SpectralAnalyzer / SVDAnalyzer
    stability        volume_contraction, total_variance
"""
