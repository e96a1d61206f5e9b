import numpy as np
import pandas as pd
import os
import anndata as ad

# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')

# bcolors
OKGREEN = '\033[92m'
WARNING = '\033[93m'
ENDC = '\033[0m'


class CountData:
    """
    A class used to create RNA-seq count anndata along with both genes and samples information.
    Samples are stored as observations (obs) and genes as variables (var).

    :param anndata: if the count data is in anndata format you should pass it through this parameter. X should be count matrix (samples x genes), obs is a sample information and var is a gene information.
    :type anndata: anndata
    :param counts: count matrix
    :type counts: pandas dataframe
    :param countPath: path of count matrix, first column should contain gene (or sample) IDs
    :type countPath: str
    :param sep: separation symbol to use for reading data in countPath properly (default: ',')
    :type sep: str
    :param countOrientation: 'genes' if genes are in the rows and samples are columns, 'samples' otherwise (default: 'genes')
    :type countOrientation: str
    :param geneInfo: dataframe that contains genes information, it should have the gene IDs as index
    :type geneInfo: pandas dataframe
    :param sampleInfo: dataframe that contains samples information, it should have sample IDs as index or in sampleIdColumn
    :type sampleInfo: pandas dataframe
    :param sampleIdColumn: name of the column in sampleInfo that contains sample IDs (default: 'sample_id')
    :type sampleIdColumn: str
    """

    def __init__(self,
                 anndata=None,
                 counts=None,
                 countPath=None,
                 sep=',',
                 countOrientation='genes',
                 geneInfo=None,
                 sampleInfo=None,
                 sampleIdColumn='sample_id'):
        self.sampleIdColumn = sampleIdColumn

        if countOrientation not in ['genes', 'samples']:
            raise ValueError("countOrientation should be 'genes' or 'samples'!")

        if countPath is not None:
            if not os.path.isfile(countPath):
                raise ValueError("file does not exist!")
            countList = pd.read_csv(countPath, sep=sep, index_col=0)
        elif counts is not None:
            if not isinstance(counts, pd.DataFrame):
                raise ValueError("counts is not data frame!")
            countList = counts.copy()
        elif anndata is not None:
            if not isinstance(anndata, ad.AnnData):
                raise ValueError("anndata is not AnnData!")
            CountData.checkCounts(anndata.to_df())
            self.geneExpr = anndata.copy()
            if sampleInfo is not None:
                self.updateSampleInfo(sampleInfo=sampleInfo)
            if geneInfo is not None:
                self.updateGeneInfo(geneInfo=geneInfo)
            return
        else:
            raise ValueError("all type of input can not be empty at the same time!")

        if countOrientation == 'genes':
            countList = countList.T

        countList.index = countList.index.astype(str)
        countList.columns = countList.columns.astype(str)
        CountData.checkCounts(countList)

        self.geneExpr = ad.AnnData(X=countList.values.astype(float),
                                   obs=pd.DataFrame(index=countList.index),
                                   var=pd.DataFrame(index=countList.columns))

        if sampleInfo is not None:
            self.updateSampleInfo(sampleInfo=sampleInfo)
        if geneInfo is not None:
            self.updateGeneInfo(geneInfo=geneInfo)

    @staticmethod
    def checkCounts(countList):
        """
        check count table is numeric, non negative and has unique IDs
        """
        if not countList.apply(lambda s: pd.to_numeric(s, errors='coerce').notnull().all()).all():
            raise ValueError("count table must contain numeric data only!")
        if (countList.values < 0).any():
            raise ValueError("count table contains negative values!")
        if countList.index.duplicated().any():
            raise ValueError("sample IDs in count table are not unique!")
        if countList.columns.duplicated().any():
            raise ValueError("gene IDs in count table are not unique!")

    def updateGeneInfo(self, geneInfo=None, path=None, sep=','):
        """
        add/update genes info in expr anndata

        :param geneInfo: gene information table you want to add to your data
        :type geneInfo: pandas dataframe
        :param path: path of geneInfo, first column should contain gene IDs
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise ValueError("path does not exist!")
            geneInfo = pd.read_csv(path, sep=sep, index_col=0)
        elif geneInfo is not None:
            if not isinstance(geneInfo, pd.DataFrame):
                raise ValueError("geneInfo is not pandas dataframe!")
        else:
            raise ValueError("path and geneInfo can not be empty at the same time!")

        geneInfo = geneInfo.copy()
        geneInfo.index = geneInfo.index.astype(str)
        geneInfo = geneInfo[~geneInfo.index.duplicated(keep='first')]

        var = self.geneExpr.var.drop(columns=self.geneExpr.var.columns.intersection(geneInfo.columns))
        self.geneExpr.var = var.join(geneInfo, how='left')

    def updateSampleInfo(self, sampleInfo=None, path=None, sep=','):
        """
        add/update metadata in expr anndata. Samples in count data are reordered to follow metadata order and
        samples missing from either table are dropped.

        :param sampleInfo: Sample information table you want to add to your data
        :type sampleInfo: pandas dataframe
        :param path: path of metaData
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise ValueError("path does not exist!")
            sampleInfo = pd.read_csv(path, sep=sep)
        elif sampleInfo is not None:
            if not isinstance(sampleInfo, pd.DataFrame):
                raise ValueError("meta data is not pandas dataframe!")
        else:
            raise ValueError("path and metaData can not be empty at the same time!")

        sampleInfo = sampleInfo.copy()
        if self.sampleIdColumn in sampleInfo.columns:
            sampleInfo.index = sampleInfo[self.sampleIdColumn]
            sampleInfo.drop(columns=[self.sampleIdColumn], inplace=True)
        sampleInfo.index = sampleInfo.index.astype(str)
        sampleInfo.index.name = None

        if sampleInfo.index.duplicated().any():
            raise ValueError("sample IDs in meta data are not unique!")

        # reorder count columns to the metadata order
        order = [sample for sample in sampleInfo.index if sample in self.geneExpr.obs_names]
        if len(order) == 0:
            raise ValueError("there is no common sample between count data and meta data!")

        missingMeta = self.geneExpr.obs_names.difference(sampleInfo.index)
        missingCounts = sampleInfo.index.difference(self.geneExpr.obs_names)
        if len(missingMeta) > 0:
            print(f"{WARNING}{len(missingMeta)} sample(s) without meta data removed: {missingMeta.tolist()}{ENDC}")
        if len(missingCounts) > 0:
            print(f"{WARNING}{len(missingCounts)} sample(s) in meta data without counts: "
                  f"{missingCounts.tolist()}{ENDC}")

        self.geneExpr = self.geneExpr[order, :].copy()
        obs = self.geneExpr.obs.drop(columns=self.geneExpr.obs.columns.intersection(sampleInfo.columns))
        self.geneExpr.obs = obs.join(sampleInfo.loc[order, :], how='left')
        print(f"{OKGREEN}Meta data added for {len(order)} samples.{ENDC}")
