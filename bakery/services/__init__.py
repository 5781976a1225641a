# Services module
#
# Import services from their modules (bakery.services.order_pipeline etc.);
# schemas import the ledger and shipping engine from here, so this package
# must not import the pipeline eagerly.
