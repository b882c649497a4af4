"""
Pool maintenance report documents

    models            Report, equipment and photo data model
    template          Report -> HTML
    image_codec       Photo references -> embeddable sources
    document_builder  HTML -> PDF file in the documents directory
    dispatcher        PDF -> platform share, text summary fallback
    pipeline          Local and remote delivery behind one facade
"""
